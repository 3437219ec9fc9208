"""
In-app notifications delivered to users (e.g. declined invitations).
"""
