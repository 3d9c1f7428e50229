"""
Syncer package: polls Flickr for recently updated photos, stores their
metadata in PostgreSQL and mirrors public photos into a Telegram channel.

All Flickr access goes through ``FlickrClient``, which only permits an
explicit list of read methods.  Runs are serialised across nodes by the
``sync_leases`` row (``syncer.lease``).
"""
