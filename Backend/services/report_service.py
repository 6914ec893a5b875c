from app_utils.geo import Coordinate, get_address_details


def submit_report(engine, submission, geocode=False):
    """
    Intake workflow: submission record -> DedupEngine.
    - Fills a blank description with the reverse-geocoded address (when enabled).
    - Image bytes are stored by the caller; only the reference is kept here.
    Returns the engine's SubmitResult.
    """
    description = (submission.description or "").strip()

    if not description and geocode:
        address_info = get_address_details(submission.lat, submission.lng)
        description = address_info.get("full_address", "")

    return engine.submit(
        submission.category,
        Coordinate(submission.lat, submission.lng),
        description=description,
        image_ref=submission.image_ref,
    )
