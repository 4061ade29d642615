from bookstudio import create_app

app = create_app()
