"""
Centralized path configuration for DockerFlow
Ensures all modules use consistent, volume-mounted paths
"""

import os

# The /app/data directory is mounted as a volume in Docker
DATA_DIR = os.getenv('DOCKERFLOW_DATA_DIR', '/app/data')

DATABASE_PATH = os.path.join(DATA_DIR, 'dockerflow.db')
DATABASE_URL = f'sqlite:///{DATABASE_PATH}'

# Host directory that receives volume backup archives. It is bind-mounted into
# the throwaway backup containers, so it must be a path on the Docker host.
BACKUP_DIR = os.getenv('DOCKERFLOW_VOLUME_BACKUP_DIR', '/var/lib/docker/backups')


# For development/testing outside Docker
if not os.path.exists('/app'):
    DATA_DIR = os.getenv('DOCKERFLOW_DATA_DIR', './data')
    DATABASE_PATH = os.path.join(DATA_DIR, 'dockerflow.db')
    DATABASE_URL = f'sqlite:///{DATABASE_PATH}'
