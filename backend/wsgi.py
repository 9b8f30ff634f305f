# backend/wsgi.py
from cafe_billing import create_app

app = create_app()
