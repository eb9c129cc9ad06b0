"""HTTP client for the form jobs API"""
