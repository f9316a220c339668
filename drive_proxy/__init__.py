"""
Google Drive download proxy that resolves the large-file confirmation page.
"""
