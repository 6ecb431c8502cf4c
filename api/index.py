"""
Serverless entry point for the RN Governance API
"""
import sys
import os

# Put src/ on the path so the flat package imports resolve
src_dir = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src")
if src_dir not in sys.path:
    sys.path.insert(0, src_dir)

# Set environment variables for serverless
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("SLA_POLICY_PATH", "/tmp/sla_policy.yaml")
os.environ.setdefault("RECONCILIATION_ENABLED", "false")  # No background jobs in serverless

from mangum import Mangum
from infrastructure.database import init_database
from main import app

# Lifespan is off, so the engine is created at cold start
init_database()

# Lambda handler for ASGI app (disable lifespan for serverless)
handler = Mangum(app, lifespan="off")
