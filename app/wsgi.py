from app.ctc import create_app

app = create_app()
