"""
tailhub services

- device/    - Registry, per-device connection supervisors, fleet supervisor
- events/    - OSC event source and event router
- discovery/ - On-demand BLE scanning
"""
