from smartgroups.services.engine import SmartGroupEngine, build_engine, get_engine, set_engine

__all__ = ["SmartGroupEngine", "build_engine", "get_engine", "set_engine"]
