import json
import os
from typing import Optional

DEFAULT_CONFIG = {
    'env': 'local',
    'db_path': 'pos.sqlite',
    # Candidate sync endpoints in priority order: remote, local-network hotspot, development.
    'cloud_server': 'https://pos-backend.example.com',
    'local_server': 'http://192.168.137.1:3001',
    'dev_server': 'http://localhost:3001',
    'resolver_ttl_seconds': 5,
    'probe_timeout_seconds': 2.0,
    'request_timeout_seconds': 10.0,
    'drain_interval_seconds': 30,
    'retry_max_attempts': 3,
    'retry_base_delay_seconds': 1.0,
    # "keep_queued" | "dequeue": what a storedInFallback acknowledgment means locally.
    'fallback_policy': 'keep_queued',
    'order_id_max_attempts': 100,
    # Delivered queue rows are kept this long, then pruned on the next drain.
    'queue_retention_seconds': 86400,
    'background_sync': True,
}

ENV_KEYS = {
    'env': 'POS_ENV',
    'db_path': 'POS_DB_PATH',
    'cloud_server': 'POS_CLOUD_SERVER',
    'local_server': 'POS_LOCAL_SERVER',
    'dev_server': 'POS_DEV_SERVER',
    'resolver_ttl_seconds': 'POS_RESOLVER_TTL_SECONDS',
    'probe_timeout_seconds': 'POS_PROBE_TIMEOUT_SECONDS',
    'request_timeout_seconds': 'POS_REQUEST_TIMEOUT_SECONDS',
    'drain_interval_seconds': 'POS_DRAIN_INTERVAL_SECONDS',
    'retry_max_attempts': 'POS_RETRY_MAX_ATTEMPTS',
    'retry_base_delay_seconds': 'POS_RETRY_BASE_DELAY_SECONDS',
    'fallback_policy': 'POS_FALLBACK_POLICY',
    'order_id_max_attempts': 'POS_ORDER_ID_MAX_ATTEMPTS',
    'queue_retention_seconds': 'POS_QUEUE_RETENTION_SECONDS',
    'background_sync': 'POS_BACKGROUND_SYNC',
}

FALLBACK_POLICIES = {"keep_queued", "dequeue"}


def _truthy(raw) -> bool:
    if isinstance(raw, bool):
        return raw
    return str(raw or "").strip().lower() in {"1", "true", "yes", "on"}


def _as_int(raw, default: int) -> int:
    try:
        return int(str(raw).strip())
    except Exception:
        return default


def _as_float(raw, default: float) -> float:
    try:
        return float(str(raw).strip())
    except Exception:
        return default


def load_config(path: Optional[str] = None) -> dict:
    """
    Merge DEFAULT_CONFIG <- JSON config file (if any) <- POS_* environment variables.
    Env wins so Docker/ops can override without rewriting the on-disk config.
    """
    cfg = dict(DEFAULT_CONFIG)
    path = path or (os.getenv("POS_CONFIG_PATH") or "").strip() or None
    if path and os.path.exists(path):
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if isinstance(data, dict):
            cfg.update({k: v for k, v in data.items() if k in DEFAULT_CONFIG})
    for key, env_name in ENV_KEYS.items():
        raw = (os.getenv(env_name) or "").strip()
        if raw:
            cfg[key] = raw
    return cfg


class Settings:
    def __init__(self, config: Optional[dict] = None, **overrides) -> None:
        cfg = dict(config) if config is not None else load_config()
        cfg.update(overrides)
        d = DEFAULT_CONFIG

        self.env = str(cfg.get('env') or d['env']).strip() or d['env']
        self.db_path = os.path.abspath(str(cfg.get('db_path') or d['db_path']))
        self.cloud_server = str(cfg.get('cloud_server') or '').strip().rstrip('/')
        self.local_server = str(cfg.get('local_server') or '').strip().rstrip('/')
        self.dev_server = str(cfg.get('dev_server') or '').strip().rstrip('/')
        self.resolver_ttl_seconds = _as_float(cfg.get('resolver_ttl_seconds'), d['resolver_ttl_seconds'])
        self.probe_timeout_seconds = _as_float(cfg.get('probe_timeout_seconds'), d['probe_timeout_seconds'])
        self.request_timeout_seconds = _as_float(cfg.get('request_timeout_seconds'), d['request_timeout_seconds'])
        self.drain_interval_seconds = _as_float(cfg.get('drain_interval_seconds'), d['drain_interval_seconds'])
        self.retry_max_attempts = max(1, _as_int(cfg.get('retry_max_attempts'), d['retry_max_attempts']))
        self.retry_base_delay_seconds = _as_float(cfg.get('retry_base_delay_seconds'), d['retry_base_delay_seconds'])
        self.order_id_max_attempts = max(1, _as_int(cfg.get('order_id_max_attempts'), d['order_id_max_attempts']))
        self.queue_retention_seconds = max(0.0, _as_float(cfg.get('queue_retention_seconds'), d['queue_retention_seconds']))
        self.background_sync = _truthy(cfg.get('background_sync', d['background_sync']))

        policy = str(cfg.get('fallback_policy') or '').strip().lower()
        self.fallback_policy = policy if policy in FALLBACK_POLICIES else d['fallback_policy']

    @property
    def exposes_errors(self) -> bool:
        return self.env in {"local", "dev"}

    def candidates(self) -> list[tuple[str, str]]:
        # (mode, base_url) in fallback priority order; empty urls are skipped.
        out = []
        for mode, url in (("online", self.cloud_server), ("local", self.local_server), ("localhost", self.dev_server)):
            if url:
                out.append((mode, url))
        return out
