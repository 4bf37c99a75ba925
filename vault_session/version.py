"""Vault Session Meta information.
   Vault Session keeps decrypted vault content in memory only while it is
   authorized to exist there.
"""
__title__ = 'vault_session'
__description__ = (
   'Secure session and content lifecycle manager for client-held '
   'encrypted notes and files.'
)
__version__ = '0.1.0'
__license__ = 'Apache-2.0'
