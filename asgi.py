"""
asgi.py -- The assembled slidingauth application: JSON API plus HTML pages.

api/ and web/ never import each other; this module is where they meet. The
session gate middleware registered in api/main.py wraps the whole app, so the
web pages get the same sliding refresh and redirects as the API.

Run with:  uvicorn asgi:app --reload
       or: python asgi.py
"""

import uvicorn

from api.main import app
from web.routes import router as web_router

app.include_router(web_router, tags=["Web"])


if __name__ == "__main__":
    uvicorn.run("asgi:app", host="127.0.0.1", port=8000)
