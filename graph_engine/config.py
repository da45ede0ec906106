"""
Configuration settings for the Graph Engine.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    # Application
    APP_NAME: str = "Graph Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    
    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    
    # Validation limits (exceeding them is reported as a warning)
    MAX_NODES: int = 100
    MAX_EDGES: int = 200
    DECISION_COVERAGE_SEVERITY: str = "warning"  # or "error"
    
    # Execution
    MAX_NODE_STEPS: int = 1000
    NODE_TIMEOUT: float = 30.0  # Seconds
    EXECUTION_TIMEOUT: float = 300.0  # Seconds
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
