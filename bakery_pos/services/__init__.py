# bakery_pos/services/__init__.py
