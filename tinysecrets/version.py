"""TinySecrets Meta information.
   TinySecrets keeps passphrase-protected, versioned secrets in a local store.
"""
__title__ = 'tinysecrets'
__description__ = (
   'Local passphrase-protected secret store with version history '
   'and encrypted export bundles.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 TinySecrets contributors'
__author__ = 'TinySecrets contributors'
__license__ = 'Apache-2.0'
