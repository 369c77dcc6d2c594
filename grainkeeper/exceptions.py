"""Custom exceptions for the GrainKeeper yield and planting-window service."""


class GrainKeeperError(Exception):
    """Base exception for this application."""
    status_code = 500


class PredictionInputError(GrainKeeperError, ValueError):
    """Error when the input handed to the yield model or window analyzer is invalid."""
    status_code = 400


class InvalidQuarterError(PredictionInputError):
    """Quarter argument outside {1, 2, 3, 4}, or a quarter missing from a comparison."""
    pass


class InvalidYearError(PredictionInputError):
    """Year outside the range covered by the historical/forecast dataset."""
    pass


class InvalidWeatherDataError(PredictionInputError):
    """A weather covariate is missing, non-finite, or (for humidity) outside [0, 100]."""
    status_code = 422


class InsufficientDataError(PredictionInputError):
    """Fewer daily observations than one planting window needs."""
    status_code = 422


class WeatherServiceError(GrainKeeperError):
    """Error related to the Open-Meteo weather service interaction."""
    status_code = 503


class WeatherRequestError(WeatherServiceError):
    """Error during the request to the weather service (connection, timeout, etc.)."""
    pass


class WeatherResponseError(WeatherServiceError):
    """Error related to the response from the weather service (server error, unexpected format)."""
    pass


class ConfigurationError(GrainKeeperError):
    """Error related to application configuration."""
    pass
