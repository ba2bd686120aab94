"""External API connectors"""
