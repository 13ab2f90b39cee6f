from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routers.auth import router as auth_router
from routers.documents import router as documents_router
from routers.notes import router as notes_router
from routers.billing import router as billing_router
from routers.tags import router as tags_router
from routers.user import router as user_router
from utils.logging_config import init_logging, install_request_logging
from utils.exception_handlers import install_exception_handlers

app = FastAPI(
    title="Study Assistant API",
    description="Backend API for document processing, AI summaries and chat, notes, tags and subscription billing.",
    version="1.0.0"
)

# Initialize logging and request middleware
init_logging()
install_request_logging(app)
install_exception_handlers(app)

app.include_router(auth_router)
app.include_router(documents_router)
app.include_router(notes_router)
app.include_router(tags_router)
app.include_router(billing_router)
app.include_router(user_router)

# CORS settings (adjust origins as needed)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def read_root():
    return {"message": "Welcome to the Study Assistant API"}
