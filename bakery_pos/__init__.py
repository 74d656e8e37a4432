# bakery_pos/__init__.py
"""Bakery POS backend: order pricing, discounts and payment reconciliation"""
