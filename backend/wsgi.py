from buyaday import create_app

app = create_app()
