"""
Order Service — 設定

すべて環境変数から読む。
"""

import os

DATABASE_URL = os.environ["DATABASE_URL"]
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# 連続イベント間の整合性待機: 0.1 秒間隔で最大 10 回
CONSISTENCY_POLL_INTERVAL = float(os.environ.get("CONSISTENCY_POLL_INTERVAL", "0.1"))
CONSISTENCY_MAX_ATTEMPTS = int(os.environ.get("CONSISTENCY_MAX_ATTEMPTS", "10"))
