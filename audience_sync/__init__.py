"""Shopify customer sync and gender enrichment for marketing segmentation"""
__version__ = "1.0.0"
