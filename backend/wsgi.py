from scrapledger import create_app

app = create_app()
