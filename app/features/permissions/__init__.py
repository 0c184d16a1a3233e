"""
Role and permission management feature module.

Group-scoped roles and permissions: roles held on a group apply to its
subgroups, and role permissions are materialized per user and group so
permission checks are a single lookup.
"""
