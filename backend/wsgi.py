from tiendapos import create_app

app = create_app()
