import os

from dotenv import load_dotenv

load_dotenv()

REGSGOV_API_KEY = os.getenv("REGSGOV_API_KEY", "DEMO_KEY")
OPENAI_API_KEY = os.getenv("OPENAI_PROJ_API", "")
LLM_DEBUG = os.getenv("LLM_DEBUG", "false").lower() == "true"
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() == "true"
