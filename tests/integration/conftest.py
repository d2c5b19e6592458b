"""
Pytest configuration and shared fixtures for Memoria daemon tests.
"""

import sys
from pathlib import Path

# Add the project root to path for memoriad imports when not installed
sys.path.insert(0, str(Path(__file__).parent.parent.parent))
# Add tests/integration to path for fixtures imports
sys.path.insert(0, str(Path(__file__).parent))
