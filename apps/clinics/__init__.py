"""
Clinic tenancy.

A Clinic is the tenant boundary: memberships, invitations and custom roles
all belong to exactly one clinic.
"""
