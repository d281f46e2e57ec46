from ticketkeeper.cli import app

app()
