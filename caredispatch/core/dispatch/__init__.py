# caredispatch/core/dispatch/__init__.py
"""
Dispatch core: matching complaints to volunteers and tracking their progress.

This package handles:
- ``domain``: categories, slot lifecycle, DispatchRecord, aggregate status
- ``geo``: "lat,lon" codec and planar nearest-volunteer matching
- ``coordinator``: complaint intake and the complaint status page
- ``status_updater``: volunteer-scoped slot transitions and assignment lists
- ``services``: notification hand-off after intake
- ``ports``: storage / directory / notifier protocols
- ``models``: Pydantic request/response models for the HTTP layer

Dispatch code must NOT import transport or concrete storage modules;
adapters are injected.
"""
