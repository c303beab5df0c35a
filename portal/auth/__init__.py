"""
Authentication for the login portal.

- Credential resolution (bcrypt verify, optional register-on-first-login)
- Server-side sessions referenced by a signed cookie (itsdangerous)
- Session gate middleware with an exact-match public allow-list
"""
