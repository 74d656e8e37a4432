# bakery_pos/utils/__init__.py
