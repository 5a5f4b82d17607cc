from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
import models
from database import engine
from routers import analysis, budgets, financial_profile, questionnaire, statements

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

# Create tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(
    title="Budget Assistant API",
    version="1.0.0",
    description="Statement trend analysis and AI budget allocation plans",
)

# CORS middleware - origins come from a comma-separated CORS_ORIGINS
# Note: Cannot use "*" with allow_credentials=True, so we list origins explicitly
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
    ).split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["*"],
    max_age=3600,
)

# Include routers
USER_PREFIX = "/users/{user_id}"
app.include_router(financial_profile.router, prefix=USER_PREFIX, tags=["Financial Profile"])
app.include_router(statements.router, prefix=USER_PREFIX, tags=["Statements"])
app.include_router(questionnaire.router, prefix=USER_PREFIX, tags=["Questionnaire"])
app.include_router(analysis.router, prefix=USER_PREFIX, tags=["Analysis"])
app.include_router(budgets.router, prefix=USER_PREFIX, tags=["Budgets"])

@app.get("/")
async def root():
    return {"message": "Budget Assistant API", "version": "1.0.0", "docs": "/docs"}
