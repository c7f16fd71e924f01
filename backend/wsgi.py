# backend/wsgi.py
from litorder import create_app

app = create_app()
