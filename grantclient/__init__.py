"""
grantclient - request orchestration, caching and optimistic updates for a grants search UI.
"""
