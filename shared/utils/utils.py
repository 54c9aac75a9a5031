import hashlib
import json
import logging
import os
import re
import threading
import time
from datetime import datetime
from functools import wraps
from pathlib import Path

import yaml

from shared.config.config import LLM_DEBUG

logger = logging.getLogger(__name__)


class Config:
    def __init__(self, **entries):
        # Normalize any path fields
        for key, value in entries.items():
            if isinstance(value, str) and value.startswith('./'):
                entries[key] = str(Path(value).resolve())
        self.__dict__.update(entries)

    @classmethod
    def from_yaml(cls, yaml_path=None):
        if yaml_path is None:
            yaml_path = Path(__file__).resolve().parent.parent / 'config' / 'config.yaml'
        else:
            yaml_path = Path(yaml_path).resolve()

        with yaml_path.open('r') as file:
            config_data = yaml.safe_load(file) or {}
        return cls(**config_data)

    def section(self, name):
        """Return a top-level section as a dict (empty if absent)."""
        return dict(getattr(self, name, None) or {})

    def __repr__(self):
        return f'Config({self.__dict__})'


cfg = Config.from_yaml()


class LLMError(RuntimeError):
    """Raised when an LLM call fails or returns nothing usable."""
    pass


class JSONParseError(ValueError):
    """Raised when no JSON object can be recovered from a model response."""
    pass


def rate_limit(min_interval):
    """
    Decorator to enforce a minimum time between calls to a function.
    Safe to use from worker threads.
    """
    def decorator(func):
        last_time = [0]
        lock = threading.Lock()

        @wraps(func)
        def wrapper(*args, **kwargs):
            with lock:
                elapsed = time.time() - last_time[0]
                if elapsed < min_interval:
                    time.sleep(min_interval - elapsed)
                last_time[0] = time.time()
            return func(*args, **kwargs)
        return wrapper
    return decorator


def count_words(text):
    """Count whitespace-separated tokens."""
    if not text:
        return 0
    return len(text.split())


def fill_prompt(template, **values):
    """Substitute {KEY} placeholders; other braces (JSON examples) are left alone."""
    for key, value in values.items():
        template = template.replace('{' + key + '}', str(value))
    return template


def gai(sys_prompt, user_prompt, model="gpt-4o", use_proxy=None):
    """
    LLM call that routes through the FastAPI proxy when one is configured.

    Args:
        sys_prompt: System prompt for the LLM
        user_prompt: User prompt for the LLM
        model: Model to use (default: gpt-4o)
        use_proxy: If True, use FastAPI proxy. If False, call OpenAI directly.
                   If None (default), use the proxy only when FASTAPI_URL or API_URL is set.

    Environment Variables:
        FASTAPI_URL: Full URL to FastAPI endpoint (e.g., http://127.0.0.1:5001/material_query)
        API_URL: Base URL of the FastAPI service; /material_query is appended
        OPENAI_PROJ_API: OpenAI key for direct calls

    Returns:
        Raw response text

    Raises:
        LLMError: If the proxy or OpenAI call fails
    """
    import requests

    fastapi_url = os.getenv('FASTAPI_URL', '').strip()
    if not fastapi_url:
        api_url = os.getenv('API_URL', '').strip()
        if api_url:
            fastapi_url = f"{api_url.rstrip('/')}/material_query"

    if use_proxy is None:
        use_proxy = bool(fastapi_url)

    if use_proxy:
        if not fastapi_url:
            raise LLMError(
                "FASTAPI_URL or API_URL environment variable must be set for proxy mode. "
                "Example: FASTAPI_URL=http://127.0.0.1:5001/material_query"
            )

        logger.debug(f"Calling LLM via FastAPI proxy: {fastapi_url}")
        payload = {
            "sys_prompt": sys_prompt,
            "prompt": user_prompt,
            "model": model
        }

        try:
            response = requests.post(fastapi_url, json=payload, timeout=cfg.section('llm').get('request_timeout', 120))
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            raise LLMError(
                f"FastAPI proxy call failed: {e}\n"
                f"  URL: {fastapi_url}\n"
                f"  Ensure the FastAPI server is running: uvicorn services.api.main:app --host 0.0.0.0 --port 5001"
            ) from e

        # FastAPI returns {"response": content}
        content = data.get("response") if isinstance(data, dict) and "response" in data else data
        if isinstance(content, (dict, list)):
            return json.dumps(content)
        return content or ""

    from openai import OpenAI, OpenAIError

    api_key = os.getenv('OPENAI_PROJ_API')
    if not api_key:
        raise LLMError(
            "OPENAI_PROJ_API not found in environment. "
            "Set it, or point FASTAPI_URL at the LLM proxy."
        )

    try:
        client = OpenAI(api_key=api_key)
        completion = client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": sys_prompt},
                {"role": "user", "content": user_prompt},
            ],
        )
    except OpenAIError as e:
        raise LLMError(f"Direct OpenAI call failed: {e}") from e

    return completion.choices[0].message.content or ""


DEFAULT_SYSTEM_PROMPT = (
    "You are a careful policy analyst reviewing public comments submitted on a "
    "federal regulation. Follow the output format instructions exactly."
)


def prompt_hash(prompt, model):
    return hashlib.sha256(f"{model}\n{prompt}".encode('utf-8')).hexdigest()


class LLMClient:
    """
    Thin wrapper around gai() that adds a prompt-level cache and debug dumps.

    The cache lives in the document database (llm_cache table), so a crashed
    pipeline run picks up where it left off without paying for the same
    prompt twice.
    """

    def __init__(self, model=None, db_manager=None, use_proxy=None, debug=None,
                 debug_dir=None, sys_prompt=DEFAULT_SYSTEM_PROMPT):
        llm_cfg = cfg.section('llm')
        self.model = model or llm_cfg.get('default_model', 'gpt-4o')
        self.db_manager = db_manager
        self.use_proxy = use_proxy
        self.sys_prompt = sys_prompt
        if debug is None:
            debug = LLM_DEBUG
        self.debug = debug
        self.debug_dir = Path(debug_dir or llm_cfg.get('debug_dir', 'debug'))

    def _cache_get(self, key):
        if self.db_manager is None:
            return None
        from shared.models.models import LLMCache

        with self.db_manager.get_session() as session:
            row = session.get(LLMCache, key)
            return row.result if row is not None else None

    def _cache_put(self, key, result, task_type, task_level, params):
        if self.db_manager is None:
            return
        from shared.models.models import LLMCache

        with self.db_manager.get_session() as session:
            session.merge(LLMCache(
                prompt_hash=key,
                task_type=task_type,
                task_level=task_level,
                task_params=json.dumps(params or {}),
                result=result,
                model=self.model,
                created_at=datetime.utcnow(),
            ))

    def _dump(self, name, prompt, response):
        self.debug_dir.mkdir(parents=True, exist_ok=True)
        (self.debug_dir / f"{name}_prompt.txt").write_text(prompt, encoding='utf-8')
        (self.debug_dir / f"{name}_response.txt").write_text(response, encoding='utf-8')

    def generate(self, prompt, task_type=None, task_level=0, params=None,
                 debug_name=None, postprocess=None):
        """
        Send a prompt and return the response text.

        Args:
            prompt: Full user prompt
            task_type: Cache bucket; caching is skipped when None
            task_level: Merge level for hierarchical tasks
            params: Extra JSON-serializable context stored with the cache row
            debug_name: File stem for debug dumps
            postprocess: Optional callable applied to the text; its return value
                is returned and a raised exception prevents caching

        Returns:
            Response text, or postprocess(text)
        """
        key = prompt_hash(prompt, self.model) if task_type else None
        if key:
            cached = self._cache_get(key)
            if cached:
                logger.debug(f"LLM cache hit for {task_type} (level {task_level})")
                return postprocess(cached) if postprocess else cached

        response = gai(self.sys_prompt, prompt, model=self.model, use_proxy=self.use_proxy)
        if not response or not response.strip():
            raise LLMError(f"Empty response from {self.model}")

        if self.debug and debug_name:
            self._dump(debug_name, prompt, response)

        result = postprocess(response) if postprocess else response
        if key:
            self._cache_put(key, response, task_type, task_level, params)
        return result

    def generate_json(self, prompt, **kwargs):
        return self.generate(prompt, postprocess=parse_json_response, **kwargs)


def clean_json_string(text):
    """
    Cleans the input text to prepare it for JSON parsing.
    - Removes Markdown code block delimiters.
    - Drops trailing commas before closing brackets.
    """
    text = text.strip()
    text = re.sub(r'^```(?:json)?\s*', '', text)
    text = re.sub(r'\s*```$', '', text)
    text = re.sub(r',\s*([}\]])', r'\1', text)
    return text.strip()


def find_json_objects(text):
    """
    Finds balanced top-level JSON objects in free text.
    Returns the list of parsed objects that decode cleanly.
    """
    objects = []
    depth = 0
    start = None
    in_string = False
    escape = False
    for i, ch in enumerate(text):
        if in_string:
            if escape:
                escape = False
            elif ch == '\\':
                escape = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == '{':
            if depth == 0:
                start = i
            depth += 1
        elif ch == '}' and depth > 0:
            depth -= 1
            if depth == 0:
                try:
                    objects.append(json.loads(text[start:i + 1]))
                except json.JSONDecodeError:
                    pass
    return objects


def parse_json_response(text):
    """
    Parse a JSON object out of a model response.

    Tries a fenced ```json block first, then the outermost braces, then the
    first balanced object found in the text.

    Raises:
        JSONParseError: If nothing parses
    """
    if isinstance(text, (dict, list)):
        return text

    fenced = re.search(r'```(?:json)?\s*([\s\S]*?)```', text)
    if fenced:
        try:
            return json.loads(clean_json_string(fenced.group(1)))
        except json.JSONDecodeError:
            pass

    start = text.find('{')
    end = text.rfind('}')
    if start != -1 and end > start:
        candidate = text[start:end + 1]
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            try:
                return json.loads(clean_json_string(candidate))
            except json.JSONDecodeError:
                pass

    objects = find_json_objects(text)
    if objects:
        return objects[0]

    raise JSONParseError(f"No JSON object found in response: {text[:100]!r}")
