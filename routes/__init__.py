"""
===========================================================================
routes/__init__.py — Routes Package Initializer
===========================================================================

PURPOSE:
    Makes the "routes" folder a Python package, so main.py can do:
        from routes.model_routes import router

    Every module in here reads the configuration from app.state.config
    rather than importing a global.
===========================================================================
"""
