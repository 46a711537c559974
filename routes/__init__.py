from .pipeline_routes import pipeline_bp
