"""
Inverter integration: telemetry model, ports, adapters and factory.
"""
