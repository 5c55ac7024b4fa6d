import atheris


class EnhancedDataProvider(atheris.FuzzedDataProvider):
    def ConsumeRandomBytes(self) -> bytes:
        return self.ConsumeBytes(self.ConsumeIntInRange(0, self.remaining_bytes()))

    def ConsumeBoundary(self) -> bytes:
        # Boundaries are 1-70 characters long.
        return self.ConsumeBytes(self.ConsumeIntInRange(1, 70)) or b"boundary"
