from .fakes import FakeClock, FakeProcess, FakeSpawner, ManualScheduler, ManualTimer

__all__ = ["FakeClock", "FakeProcess", "FakeSpawner", "ManualScheduler", "ManualTimer"]
