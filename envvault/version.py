"""EnvVault Meta information.
   EnvVault keeps environment variables encrypted end-to-end, deriving
   the vault key from a master password that never leaves the client.
"""
__title__ = 'envvault'
__description__ = (
   'Zero-knowledge vault core for environment variables: '
   'key derivation, field encryption, session auto-lock and key rotation.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
