from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from config import get_app_config
from SQL_agent import router as sql_agent_router

app_config = get_app_config()
logging.basicConfig(
    level=app_config.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="SQL Assistant")
app.include_router(sql_agent_router)

# --- Enable CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=app_config.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {"status": "running"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
