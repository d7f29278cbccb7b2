from labinventory import create_app

app = create_app()
