"""TourGuide Vault Meta information.
   TourGuide Vault keeps API keys, JWT secrets and encryption keys
   encrypted at rest and hands them out through a cached token provider.
"""
__title__ = 'tourguide_vault'
__description__ = (
   'Encrypted secrets vault with rotation scheduling '
   'and a cached token provider.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2024 TourGuideAI'
__author__ = 'TourGuideAI Team'
__author_email__ = 'dev@tourguideai.com'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/tourguideai/tourguide-vault'
