from ws_monitor.app.routers import projects

__all__ = ["projects"]
