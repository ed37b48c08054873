"""
Carrier adapters for shipping quotes and tracking.

Use ``shipkit.services.shipping.factory.get_carrier`` to build one.
"""
