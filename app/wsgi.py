from app.keepsake import create_app

app = create_app()
