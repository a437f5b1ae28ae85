"""HTTP claim page and API"""
