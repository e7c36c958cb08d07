from app.festgate import create_app

app = create_app()
