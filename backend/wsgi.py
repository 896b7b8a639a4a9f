# backend/wsgi.py
from flowershop import create_app

app = create_app()
