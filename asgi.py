"""
asgi.py -- ASGI entry point: the API app plus the browser routes.

api/main.py builds the FastAPI app with the bearer-channel routers only.
web/routes.py holds the session-cookie routes. They meet here and nowhere
else, so neither layer imports the other and the two channels stay apart.

Run with:  uvicorn asgi:app --reload
           authgate serve
"""

from api.main import app
from web.routes import refresh_sliding_session
from web.routes import router as web_router

app.include_router(web_router, tags=["Browser"])
app.middleware("http")(refresh_sliding_session)
